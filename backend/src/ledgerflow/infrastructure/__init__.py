"""Infrastructure adapters implementing domain ports"""
