"""
Setup script for Mitthi - end-to-end encryption for shared-code chat rooms.

Created by orpheus497

This package provides:
- PBKDF2-HMAC-SHA256 room key derivation (200,000 iterations)
- AES-256-GCM message and metadata encryption
- Chunked AES-256-GCM stream encryption for images, audio, video and files
- Room code verifier for early rejection of wrong room codes
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='mitthi-crypto',
    version='1.0.0',
    author='orpheus497',
    description='Client-side end-to-end encryption for shared-code chat rooms',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'cryptography>=42.0.4',
        'rich>=13.7.0',
        'aiofiles>=23.2.1',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'mitthi=mitthi.__main__:main',
        ],
    },
)
