"""Milestone domain: generation from approved budgets and the escrow-backed lifecycle"""
