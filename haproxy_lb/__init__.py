"""haproxy-k8s-lb.

External load balancer for Kubernetes built on HAProxy: watches services and
nodes, renders an HAProxy configuration and hot-reloads the running process.
"""
