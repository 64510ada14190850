"""Application package for the SmartPrep test-preparation platform."""
