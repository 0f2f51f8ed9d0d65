"""
Content Generation Module

workflows/ holds the content pipeline schema (strategy through reinforcement learning).
"""
