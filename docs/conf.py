# Sphinx configuration for the stepflow API docs

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

from stepflow import __version__

project = 'stepflow'
author = 'stepflow contributors'
release = __version__
version = '.'.join(__version__.split('.')[:2])

root_doc = 'index'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'

# Public names are re-exported by stepflow.__init__; the API page documents
# each object in the module that defines it.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'show-inheritance': True,
}

# Docstrings use reST field lists and Google-style sections
napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}
