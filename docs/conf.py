"""Sphinx configuration for libwiz documentation."""

from __future__ import annotations

import os
import pathlib
import sys
from datetime import datetime

# Make the package importable without installing it
sys.path.insert(0, os.path.abspath(".."))

from libwiz import __version__  # noqa: E402

# Project information
project = "libwiz"
author = "libwiz contributors"
copyright = f"{datetime.now().year}, {author}"
version = __version__
release = __version__

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.intersphinx",
    "sphinx.ext.viewcode",
    "sphinx.ext.napoleon",
    "sphinx_autodoc_typehints",
    "myst_parser",
]

exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

source_suffix = {
    ".rst": "restructuredtext",
    ".md": "markdown",
}

master_doc = "index"

# Autodoc settings
autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "special-members": "__init__",
    "show-inheritance": True,
}
autodoc_typehints = "description"
autodoc_class_signature = "separated"

# Google-style docstrings with ```python example blocks
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_init_with_doc = True
napoleon_use_admonition_for_examples = True
napoleon_attr_annotations = True

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
}

typehints_defaults = "comma"
always_document_param_types = True

myst_enable_extensions = [
    "colon_fence",
    "deflist",
]

html_theme = "sphinx_rtd_theme"
html_theme_options = {
    "navigation_depth": 3,
    "collapse_navigation": False,
}

html_static_path = ["_static"]
pathlib.Path(__file__).parent.joinpath("_static").mkdir(exist_ok=True)

nitpicky = False
