"""
EHS Hub - Workflow Service

Corrective/preventive action workflows: responsible users report, validators
approve or return.
"""

__version__ = "1.0.0"
