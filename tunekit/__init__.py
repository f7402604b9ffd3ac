"""
tunekit - black-box parameter optimization for command-line tools.

This package provides:
- Space: discrete parameter spaces and immutable candidates
- Search: exhaustive sweep and tabu search algorithms
- Objectives: pluggable scoring functions and multi-objective reduction
- Experiment: the control loop tying target, objectives and search together
"""

__version__ = "1.0.0"
__author__ = "tunekit developers"
