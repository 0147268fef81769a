"""Tests for mbed_cloud_connect."""
