"""EMR Gateway backend"""
