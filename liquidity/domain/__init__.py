"""
Domain layer - models, interfaces and services of the engine system.
"""
