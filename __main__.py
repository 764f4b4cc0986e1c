import appstack.pulumi_resources.app_stack

appstack.pulumi_resources.app_stack.AppStack.autoload()
