"""
Test suite for the synthsky simulator and validation metrics

To run all tests:
    PYTHONPATH=.:src python -m pytest validation/tests/ -v

To run specific test file:
    PYTHONPATH=.:src python -m pytest validation/tests/test_sensor_physics.py -v

To run with coverage:
    PYTHONPATH=.:src python -m pytest validation/tests/ --cov=synthsky --cov-report=html
"""
