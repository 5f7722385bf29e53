from setuptools import setup, find_packages

setup(
    name='laughter_meter',
    version='0.1',
    description='Laughter intensity meter driven by microphone loudness',
    license='new BSD',
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires='>=3.10',
    install_requires=[
        'numpy',
        'librosa',
        'sounddevice',
        'fastapi',
        'python-multipart',
        'uvicorn',
    ],
    tests_require=['pytest', 'httpx'],
    extras_require={
        'test': ['pytest', 'httpx'],
    },
    entry_points={
        'console_scripts': [
            'laughter-meter=laughter_meter.meter.cli:main',
            'laughter-meter-api=laughter_meter.meter.api:main',
        ],
    },
    scripts=[],
    include_package_data=True,
    zip_safe=False
)
