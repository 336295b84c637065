from setuptools import find_packages, setup

tests_require = [
    'delegator.py>=0.1.1',
    'pytest>=7.0',
]

setup(
    name='idlewakeups',
    version='0.1.0',
    description='Idle-wakeup analysis of context-switch traces with pprof export',
    packages=find_packages('src'),
    package_dir={'': 'src'},
    python_requires='>=3.9',
    install_requires=[
        'protobuf>=4.21',
    ],
    entry_points='''
        [console_scripts]
        idlewakeups=idlewakeups.cli:run
    ''',
    extras_require={
        'test_utils': tests_require,
    }
)
