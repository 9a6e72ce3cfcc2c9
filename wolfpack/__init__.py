"""Wolfpack messaging, social toggles and notification sync layer."""
