[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tinydark"
version = "0.1.0"
description = "Small CPU neural-network building blocks on NumPy: activations, array helpers, box geometry with IoU gradients and NMS, and basic layers"
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = ["neural-network", "yolo", "iou", "nms", "activation", "gemm", "batchnorm", "numpy"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tinydark"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
