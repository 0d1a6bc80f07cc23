"""Legacy file to scene graph importers"""
