"""
Shared building blocks for the map square renderer:
- types.py: SquareId / QuadrantId / QuadrantStatus and the pipeline value types
- geo.py: square id parsing and quadrant / world-grid geometry
- logging_setup.py: JSON logging configuration
"""
