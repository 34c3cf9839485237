"""Resolving upstream host names and dialing the resolved addresses."""