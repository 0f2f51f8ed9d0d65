"""
Development Module

workflows/ holds the development pipeline schema: intake, planning, development, review.
"""
