"""Budget (quote) domain: schemas, repository, service and router"""
