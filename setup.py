from setuptools import setup

# Read in requirements.txt and populate the install requirements with the
# non-comment, non-environment-specifier contents.
_REQUIREMENTS = [req.split(';')[0].split('#')[0].strip() for req in
                 open('requirements.txt').readlines()
                 if (not req.startswith(('#', 'hg+', 'git+'))
                     and len(req.strip()) > 0)]

setup(
    install_requires=_REQUIREMENTS,
)
