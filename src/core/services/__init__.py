# zero-trust-analytics - Core services
# Pure domain services shared by the components
