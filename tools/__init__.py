"""MCP tool registrations for the image optimizer"""
