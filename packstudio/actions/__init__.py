"""Server actions exposed through the API"""
