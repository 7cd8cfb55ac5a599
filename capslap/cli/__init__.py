"""CLI module for capslap."""
