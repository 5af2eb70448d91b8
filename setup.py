import os
import codecs
from setuptools import setup, find_packages

HERE = os.path.abspath(os.path.dirname(__file__))


def read(*parts):
    with codecs.open(os.path.join(HERE, *parts), 'rb', 'utf-8') as f:
        return f.read()


setup(
    version='0.1.0',
    name='txboulder',
    description='Boulder-era ACME client for Twisted',
    license='Expat',
    long_description=read('README.rst'),
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    zip_safe=True,
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Framework :: Twisted',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Programming Language :: Python :: Implementation :: PyPy',
        'Topic :: Internet :: WWW/HTTP',
        'Topic :: Software Development :: Libraries :: Python Modules',
        ],
    install_requires=[
        'acme>=0.21.0',
        'attrs>=19.1.0',
        'cryptography',
        'eliot>=1.0.0',
        'idna>=2.5',
        'josepy',
        'treq>=18.6.0',
        'twisted[tls]>=21.2.0',
        'zope.interface',
        ],
    extras_require={
        'test': [
            'fixtures>=1.4.0',
            'hypothesis>=3.20.0',
            'testtools>=2.1.0',
            ],
        },
    entry_points={
        'console_scripts': [
            'txboulder = txboulder.script:run',
            ],
        },
    )
