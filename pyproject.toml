[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "firecracker_sdk"
version = "0.1.0"
description = "Helpers for Firecracker microVMs: VMM and jailer command builders, drives, init handlers, kernel args, metadata-store API calls and CNI network settings."
requires-python = ">=3.10"
dependencies = []
keywords = ["firecracker", "microvm", "virtualization", "jailer", "cni", "vmm", "mmds"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["firecracker_sdk"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
