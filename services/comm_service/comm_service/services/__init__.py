# Dispatch, confirmation, verification and event services
