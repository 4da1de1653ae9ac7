import os

from setuptools import setup, find_packages

__version__ = "1.0"

tests_require = ['pytest', 'click', 'mypy', 'pycodestyle', 'types-setuptools']

extras_require = {
    'cli': ['click'],
    'test': tests_require,
}


def read(fname):
    return open(os.path.join(os.path.dirname(__file__), fname)).read()


setup(
    name='s7plc',
    version=__version__,
    description='Pure Python client for Siemens S7 PLC data blocks',
    packages=find_packages(include=['s7plc', 's7plc.*']),
    package_data={'s7plc': ['py.typed']},
    license='MIT',
    long_description=read('README.rst'),
    entry_points={
        'console_scripts': [
            's7plc-server = s7plc.server.__main__:main',
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Topic :: System :: Hardware",
        "Intended Audience :: Developers",
        "Intended Audience :: Manufacturing",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires='>=3.9',
    extras_require=extras_require,
    tests_require=tests_require,
    test_suite="tests",
)
