from setuptools import find_packages, setup

setup(
    name='buildhive',
    version='1.0.0',
    description='Build job dispatch: assign pending jobs to idle build hosts',
    packages=find_packages(exclude=[
        'buildhive.test',
        'buildhive.test.*',
    ]),
    python_requires='>=3.8',
    install_requires=[
        'python-dateutil',
        'requests',
        'simplejson',
    ],
    extras_require={
        'test': [
            'mock',
            'pytest',
        ],
    },
    entry_points={
        "console_scripts": [
            "hive = buildhive.main:main",
        ],
    }
)
