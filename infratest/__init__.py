"""Terraform scenario verification engine."""
