from setuptools import setup

package_name = 'trajopt_collision'

setup(
    name=package_name,
    version='0.1.0',
    packages=[
        package_name,
        f'{package_name}.collision',
        f'{package_name}.sco',
    ],
    package_dir={'': 'src'},
    python_requires='>=3.10',
    install_requires=['setuptools', 'numpy', 'scipy', 'pin', 'cvxpy'],
    extras_require={'test': ['pytest']},
    zip_safe=True,
    maintainer='root',
    description='Collision cost and constraint terms for trajectory optimization',
    license='MIT',
)
