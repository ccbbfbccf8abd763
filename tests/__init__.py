"""Test suite for the image optimizer"""
