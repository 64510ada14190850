"""HTTP routers for the SmartPrep API."""
