#!/usr/bin/env python
# setup.py

"""
dbmigrate setup file

To use:

    python setup.py sdist

    twine upload dist/*

To install in development mode:

    pip install -e .[test]

"""

from setuptools import setup, find_packages
from codecs import open
from os import path

from dbmigrate.version_string import VERSION_STRING

PACKAGE_NAME = "dbmigrate"
THIS_DIR = path.abspath(path.dirname(__file__))
README_FILE = path.join(THIS_DIR, 'README.rst')  # read


# =============================================================================
# Get the long description from the README file
# =============================================================================

with open(README_FILE, encoding='utf-8') as f:
    long_description = f.read()


# =============================================================================
# Specify requirements
# =============================================================================

REQUIREMENTS = [
    # - Include as few version requirements as possible.
    # - Keep it to pure-Python packages.
    # - Database drivers (pyodbc, mysqlclient, psycopg2...) are the user's
    #   choice and are not requirements.

    "colorlog",
    "python-dateutil",  # "import dateutil"
    "SQLAlchemy>=2.0,<2.1",
]

TEST_REQUIREMENTS = [
    "pytest",
]


# =============================================================================
# setup args
# =============================================================================

setup(
    name=PACKAGE_NAME,

    version=VERSION_STRING,

    description='Copy, update or delete rows between relational databases',
    long_description=long_description,

    # Author details
    author='the dbmigrate authors',

    # Choose your license
    license='Apache License 2.0',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        # How mature is this project? Common values are
        #   3 - Alpha
        #   4 - Beta
        #   5 - Production/Stable
        'Development Status :: 3 - Alpha',

        # Indicate who your project is intended for
        'Intended Audience :: Developers',

        # Pick your license as you wish (should match "license" above)
        'License :: OSI Approved :: Apache Software License',

        'Natural Language :: English',

        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',

        'Topic :: Database',
        'Topic :: Software Development :: Libraries',
    ],

    keywords='database migration sqlalchemy',

    packages=find_packages(),  # finds all the .py files in subdirectories

    python_requires='>=3.8',

    install_requires=REQUIREMENTS,

    extras_require={
        'test': TEST_REQUIREMENTS,
    },
)
