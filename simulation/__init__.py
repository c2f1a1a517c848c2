"""Simulator-facing command transports"""
