from setuptools import setup, find_packages

setup(
    name             = 'callcap',
    version          = '1.0.0',
    description      = 'callcap — per-call PCAP reconstruction from archived SIP/RTP captures',
    packages         = find_packages(exclude=['tests*']),
    install_requires = open('requirements.txt').read().splitlines(),
    extras_require   = {
        'test': ['pytest>=7.0', 'httpx>=0.24'],
    },
    entry_points     = {
        'console_scripts': [
            'callcap     = callcap.cli:main',
            'callcap-api = callcap.api:main',
        ],
    },
    python_requires  = '>=3.10',
    classifiers      = [
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX :: Linux',
    ],
)
