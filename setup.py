#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from setuptools import setup
from setuptools import find_packages

INSTALL_REQUIRES = []

EXTRAS_REQUIRE = {
    'test': [
        'pytest',
        'deepdiff',
    ],
}

setup(
    author='Cumulus Networks',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: GNU General Public License v2 (GPLv2)',
        'Natural Language :: English',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Networking',
        'Topic :: System :: Networking :: Firewalls',
    ],
    description='netfilter netlink attribute, header and message codec',
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    license='GNU General Public License v2',
    keywords='netfilter netlink nfnetlink conntrack',
    name='nfnetlink',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.6',
    version='0.1.0',
    setup_requires=['setuptools'],
)
