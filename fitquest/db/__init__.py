"""Persistence for the reward engine"""
