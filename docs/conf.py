from __future__ import annotations

import os
import sys


SRC_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, SRC_ROOT)


project = "relativepose"
author = "relativepose contributors"

extensions = [
    "myst_parser",
    "sphinx.ext.autodoc",
    "sphinx.ext.mathjax",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
]

exclude_patterns = ["_build", "examples"]

source_suffix = {
    ".rst": "restructuredtext",
    ".md": "markdown",
}

myst_enable_extensions = ["amsmath", "dollarmath"]

autodoc_typehints = "description"
napoleon_numpy_docstring = True

html_theme = "sphinx_rtd_theme"
