from setuptools import setup

import lunmount


setup(
    name="lunmount",
    description='Attach iSCSI LUNs as persistent, self-healing mounts',
    version=lunmount.__version__,
    license="AGPL",
    packages=[
        'lunmount',
        'lunmount.block',
        'lunmount.deps',
        'lunmount.commands',
    ],
    python_requires='>=3.8',
    install_requires=[
        'PyYAML',
        'attrs',
        'jsonschema',
    ],
    extras_require={
        'test': [
            'pytest',
            'parameterized',
        ],
    },
    entry_points={
        'console_scripts': [
            'lunmount = lunmount.commands.main:main',
        ],
    }
)
