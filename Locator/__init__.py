from Locator.Strategy import ElementSnapshot, LocatorStrategy
