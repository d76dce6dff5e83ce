from setuptools import setup, find_packages

def parse_requirements(filename):
    with open(filename, 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name = 'SQLUtil',
    version = '0.1',
    py_modules = ['SQLUtil'],
    packages = find_packages(include = ['Utils', 'Utils.*']),
    install_requires = parse_requirements('requirements.txt'),
    extras_require = {
        'test': ['pytest'],
    },
    entry_points = {
        'console_scripts': [
            'SQLUtil = SQLUtil:main',
        ],
    },
)
