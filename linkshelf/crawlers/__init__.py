"""HTTP clients for web pages and the GitHub API"""
