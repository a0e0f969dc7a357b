from setuptools import setup, find_packages

setup(
    name='cpc',
    version='0.1.0',
    packages=find_packages(exclude=['cpc.tests']),
    include_package_data=True,
    install_requires=[
        'typer',
        'python-dotenv',
        'PyYAML',
        'rich',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'cpc=cpc.cli:entrypoint'
        ]
    },
    description='CLI for provisioning and managing a personal Kubernetes cluster',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX',
    ],
    python_requires='>=3.8',
)
