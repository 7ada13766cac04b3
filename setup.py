from setuptools import setup, find_packages

with open('README.md', 'r', encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='colmapkit',
    version='0.2.0',
    author='SperidLabs',
    author_email='contact@speridlabs.com',
    description='Read, write and convert COLMAP sparse reconstructions and camera models',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
    install_requires=[
        'numpy>=1.21.0',
    ],
    extras_require={
        'dev': [
            'pytest>=6.0',
        ]
    },
    entry_points={
        'console_scripts': [
            'colmapkit=colmapkit.cli:main',
        ],
    },
)
