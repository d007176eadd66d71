"""Principal and issuer base classes, with Kubernetes and URI principals."""