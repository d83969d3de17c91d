"""
Benefit Service
Balance-bearing benefit records and atomic transfers between them.
"""
