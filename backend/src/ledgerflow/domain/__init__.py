"""Domain layer - ports that infrastructure adapters implement"""
