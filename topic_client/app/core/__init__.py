SERVICE_NAME = "topic-client"
