#!/usr/bin/env python
# dbmigrate/version_string.py

"""
===============================================================================

    Copyright (C) 2024 the dbmigrate authors.

    This file is part of dbmigrate.

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        https://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

===============================================================================

**Current version number of this library.**

NOTE: this file must be importable by setup.py during package installation and
must therefore have NO DEPENDENCIES.

"""

VERSION_STRING = '0.3.0'
# Use semantic versioning: http://semver.org/
